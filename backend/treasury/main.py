from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from treasury import settings
from treasury.errors import register_error_handlers
from treasury.logging_config import configure_logging
from treasury.routers import (
    admincenter,
    areas,
    attachments,
    bank_accounts,
    dashboard,
    drafts,
    imports,
    movements,
    reports,
)


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Movement lifecycle, approvals, draft imports and balance reporting for treasury areas.",
        version="0.1.0",
    )

    # Local frontend dev (Vite on 5173) by default; see TREASURY_CORS_ORIGINS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(movements.router, prefix="/api/movements", tags=["movements"])
    app.include_router(attachments.router, prefix="/api/movements", tags=["attachments"])
    app.include_router(drafts.router, prefix="/api/drafts", tags=["drafts"])
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])
    app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
    app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
    app.include_router(areas.router, prefix="/api/areas", tags=["areas"])
    app.include_router(bank_accounts.router, prefix="/api/bank-accounts", tags=["bank-accounts"])
    app.include_router(admincenter.router, prefix="/api/admincenter", tags=["admincenter"])

    return app


app = create_app()
