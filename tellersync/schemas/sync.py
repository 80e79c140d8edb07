from pydantic import BaseModel, Field


class SaveTokenRequest(BaseModel):
    access_token: str | None = None
    label: str | None = None


class SaveTokenResponse(BaseModel):
    ok: bool = True
    label: str


class SyncRequest(BaseModel):
    """Body of POST /sync and /sync-delta. Every field is optional."""
    access_token: str | None = None
    label: str | None = None
    page_size: int | None = Field(default=None, gt=0, le=10_000)


class SyncErrorItem(BaseModel):
    account_id: str
    reason: str


class SyncResponse(BaseModel):
    ok: bool = True
    mode: str
    accounts: int
    transactions: int
    errors: list[SyncErrorItem] = []


class WebhookAck(BaseModel):
    ok: bool = True
    forwarded: bool | None = None
