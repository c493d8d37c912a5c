"""Error response schemas. 422 uses the FastAPI default; do not override."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class RelayErrorBody(BaseModel):
    """Body rendered for every RelayError (400, 404, 429, 503).

    ``action_required``/``suggestions`` accompany NotReady; ``stop_polling`` accompanies
    an unknown task id.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = False
    error: str
    message: str
    action_required: Optional[str] = None
    suggestions: Optional[List[str]] = None
    stop_polling: Optional[bool] = None
