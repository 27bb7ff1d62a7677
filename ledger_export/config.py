"""
Configuration Management Module

This module defines the configuration schema for the Ledger Export application
using Pydantic. It handles:
1.  Loading configuration from YAML files (e.g., `config.yaml`).
2.  Overriding settings via environment variables (prefixed with `LEDGER_EXPORT_`).
3.  Defining default values for all settings.
4.  Providing typed configuration objects for the rest of the application.
"""

import logging
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional, Dict, Any
from zoneinfo import ZoneInfo

import yaml
from pydantic import Field, BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class InstitutionConfig(BaseModel):
    """Settings shared by every institution."""
    page_size: int = 100


class RBCConfig(InstitutionConfig):
    page_size: int = 200
    base_url: str = "https://www1.royalbank.com/sgw5/digital"
    # How far back "All" reaches when no start date is given
    credit_history_years: int = 4
    debit_history_years: int = 7


class WealthsimpleConfig(InstitutionConfig):
    page_size: int = 100
    accounts_page_size: int = 25
    graphql_url: str = "https://my.wealthsimple.com/graphql"


class NeoConfig(InstitutionConfig):
    page_size: int = 1000
    graphql_url: str = "https://api.production.neofinancial.com/graphql"
    include_authorized: bool = Field(
        default=False,
        description="Export AUTHORIZED (not yet confirmed) card transactions"
    )


class Config(BaseSettings):
    """
    Global configuration for the ledger-export application.

    Supports loading configuration from:
    1.  Environment variables (prefixed with LEDGER_EXPORT_)
    2.  A YAML configuration file
    3.  Default values defined in this class
    """

    output_dir: Path = Field(
        default=Path("./exports"),
        description="Directory where exported CSV files will be written"
    )
    browser_profile_path: Path = Field(
        default=Path.home() / ".ledger_export_chrome_profile",
        description="Path to the Chrome user profile directory"
    )
    headless: bool = Field(
        default=False,
        description="Run browser in headless mode"
    )
    timeout: int = Field(
        default=30000,
        description="Default timeout for browser actions in milliseconds"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug logging"
    )
    time_zone: Optional[str] = Field(
        default=None,
        description="IANA zone used to turn timestamps into calendar days (default: machine local zone)"
    )
    escape_quotes: bool = Field(
        default=True,
        description="Double embedded quotes in CSV fields; disable for legacy byte-compatible output"
    )

    rbc: RBCConfig = Field(default_factory=RBCConfig)
    wealthsimple: WealthsimpleConfig = Field(default_factory=WealthsimpleConfig)
    neo: NeoConfig = Field(default_factory=NeoConfig)

    model_config = SettingsConfigDict(
        env_prefix='LEDGER_EXPORT_',
        env_nested_delimiter='__',
        extra='ignore'
    )

    def zone(self) -> tzinfo:
        """Return the configured time zone, or the machine's local zone when unset."""
        if self.time_zone:
            return ZoneInfo(self.time_zone)
        return datetime.now().astimezone().tzinfo

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration, optionally from a YAML file.
        """
        search_paths = [
            config_path,
            Path("config.yaml"),
            Path("config.yml"),
            Path.home() / ".ledger_export" / "config.yaml",
            Path.home() / ".ledger_export" / "config.yml",
        ]

        config_data: Dict[str, Any] = {}

        found_path = None
        for path in search_paths:
            if path and path.exists() and path.is_file():
                found_path = path.resolve()
                break

        if found_path:
            try:
                with open(found_path, 'r', encoding='utf-8') as f:
                    file_data = yaml.safe_load(f)
                if file_data:
                    # Relative output paths are relative to the config file
                    if 'output_dir' in file_data:
                        path_val = Path(file_data['output_dir'])
                        if not path_val.is_absolute():
                            file_data['output_dir'] = found_path.parent / path_val
                    config_data = file_data
                logger.info("Loaded configuration from: %s", found_path)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Error loading config file %s: %s", found_path, e)
        else:
            logger.debug("No config file found. Using default configuration.")

        # Pydantic merges init kwargs (file data) with env vars and defaults
        return cls(**config_data)


# Global config instance
settings = Config.load()
