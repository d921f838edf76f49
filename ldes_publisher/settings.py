from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Identity
    service_name: str = Field("ldes-publisher", alias="SERVICE_NAME")
    service_version: str = Field("0.1.0", alias="SERVICE_VERSION")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    port: int = Field(8640, alias="PORT")

    # LDES in LDP container
    lil_url: str = Field(
        "http://localhost:3000/aggregation_pod/aggregation/",
        alias="LIL_URL",
    )
    tree_path: str = Field("https://saref.etsi.org/core/hasTimestamp", alias="TREE_PATH")
    version_of_path: str = Field("1.0", alias="VERSION_OF_PATH")
    fragment_size: int = Field(100, alias="LDES_FRAGMENT_SIZE")

    # Registered continuous query used to annotate every publish
    query_name: str = Field("averageHRPatient1", alias="LDES_QUERY_NAME")

    # Aggregation pod credentials
    aggregation_pod_web_id: Optional[str] = Field(None, alias="AGGREGATION_POD_WEB_ID")
    aggregation_pod_email: Optional[str] = Field(None, alias="AGGREGATION_POD_EMAIL")
    aggregation_pod_password: Optional[str] = Field(None, alias="AGGREGATION_POD_PASSWORD")
    aggregation_pod_idp: Optional[str] = Field(None, alias="AGGREGATION_POD_IDP")

    # HTTP
    http_connect_timeout: float = Field(10.0, alias="HTTP_CONNECT_TIMEOUT")
    http_read_timeout: float = Field(30.0, alias="HTTP_READ_TIMEOUT")

    @field_validator("lil_url")
    @classmethod
    def _container_url(cls, value: str) -> str:
        # LDP containers are addressed with a trailing slash
        return value if value.endswith("/") else value + "/"

    def ldes_config(self) -> dict[str, str]:
        """Container config used to initialise the container and on every append."""
        return {
            "LDESinLDPIdentifier": self.lil_url,
            "treePath": self.tree_path,
            "versionOfPath": self.version_of_path,
        }


settings = Settings()
