from stoat.models.base import StoatModel


class ErrorResponse(StoatModel):
    code: str
    message: str
    fields: list[str] | None = None


class ErrorEnvelope(StoatModel):
    error: ErrorResponse
