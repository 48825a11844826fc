import logging
import os


class Settings:
    """
    Very simple settings holder.
    Reads everything from environment variables once, at import time.
    """

    def __init__(self) -> None:
        self.database_url: str = os.getenv("DATABASE_URL", "")
        self.database_name: str = os.getenv("DATABASE_NAME", "")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.port: int = int(os.getenv("PORT", 8000))

        # ERP (SAP OData) purchase requisition feed
        self.erp_indents_url: str = os.getenv("ERP_INDENTS_URL", "")
        self.erp_username: str = os.getenv("ERP_USERNAME", "")
        self.erp_password: str = os.getenv("ERP_PASSWORD", "")
        self.erp_client: str = os.getenv("ERP_CLIENT", "700")
        self.erp_since: str = os.getenv("ERP_SINCE", "2025-01-01")


settings = Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
