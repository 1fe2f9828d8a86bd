from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.exeat_roles.router import router as exeat_roles_router
from app.api.v1.exeats.staff_router import router as staff_exeats_router
from app.api.v1.exeats.student_router import router as student_exeats_router
from app.api.v1.parent_consent.router import router as parent_consent_router
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Exeat Workflow Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(student_exeats_router)
    app.include_router(staff_exeats_router)
    app.include_router(parent_consent_router)
    app.include_router(exeat_roles_router)

    return app


app = create_app()
