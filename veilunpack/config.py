"""Configuration management for veilunpack."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Load .env from multiple locations
# 1. Current working directory
load_dotenv()
# 2. Project directory (where this package is installed)
_package_dir = Path(__file__).parent
load_dotenv(_package_dir.parent / ".env")
# 3. Home directory config
load_dotenv(Path.home() / ".config" / "veilunpack" / ".env")

BUNDLE_DATA_RESOURCE = ".bundle.dat"
BUNDLE_MANIFEST_RESOURCE = ".bundle.manifest"


class Config(BaseSettings):
    """Configuration for veilunpack."""

    # Detection Settings
    bundle_data_resource: str = Field(
        default=BUNDLE_DATA_RESOURCE,
        description="Name of the embedded resource holding the compressed modules",
    )
    bundle_manifest_resource: str = Field(
        default=BUNDLE_MANIFEST_RESOURCE,
        description="Name of the embedded resource holding the XML manifest",
    )

    # Input Settings
    input_patterns: list[str] = Field(
        default_factory=lambda: ["*.exe", "*.dll"],
        description="Glob patterns of files to process when the input is a directory",
    )

    # Output Settings
    output_dir: Optional[Path] = Field(default=None, description="Output directory for extracted modules")
    overwrite_existing: bool = Field(
        default=False,
        description="Overwrite existing files instead of adding a numeric suffix",
    )

    model_config = {
        "env_prefix": "VEILUNPACK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("bundle_data_resource", "bundle_manifest_resource")
    @classmethod
    def validate_resource_name(cls, v: str) -> str:
        """Resource names are matched exactly, so an empty one can never match."""
        if not v:
            raise ValueError("resource name must not be empty")
        return v
