from typing import Any, List, Optional

from pydantic import BaseModel

from cinegen.utils.logging_setup import setup_logger

__all__ = ["ToolResponse", "setup_logger"]


class ToolResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    content: Optional[Any] = None
    output_url: Optional[str | List[str]] = None

    class Config:
        extra = "allow"
