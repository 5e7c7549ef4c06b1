from pydantic import BaseModel, ConfigDict


class StoatModel(BaseModel):
    """Base for response models and event resource snapshots."""

    model_config = ConfigDict(frozen=True)

    def snapshot(self) -> dict:
        """JSON-safe dict used as the ``resource`` of a domain event."""
        return self.model_dump(mode="json")
