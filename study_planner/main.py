from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from study_planner import __version__
from study_planner.api.v1.middleware.error_handler import ErrorHandlerMiddleware
from study_planner.api.v1.middleware.logging_middleware import LoggingMiddleware
from study_planner.api.v1.router import v1_router
from study_planner.config import Settings, settings
from study_planner.dependencies import build_task_manager
from study_planner.utils.logging import get_logger, setup_logging


def create_app(config: Settings = settings, llm_client=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(debug=config.debug, json_logs=config.json_logs)
        logger = get_logger("startup")
        logger.info("Starting study-plan service", version=__version__)

        manager = build_task_manager(config, llm_client=llm_client)
        await manager.recover()
        app.state.task_manager = manager
        logger.info("Task manager initialized", task_dir=config.task_dir, plan_dir=config.plan_dir)

        yield

        await manager.shutdown()
        logger.info("Shutting down")

    app = FastAPI(
        title="Study Planner",
        description="Asynchronous study-plan generation for title-exam preparation",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware is applied in reverse order -- outermost first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("study_planner.main:app", host=settings.host, port=settings.port, reload=settings.debug)
