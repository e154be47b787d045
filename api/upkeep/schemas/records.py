from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TransactionType = Literal["debit", "credit"]
TransactionStatus = Literal["on_hold", "completed"]


class _DocumentRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WalletTransactionRecord(_DocumentRecord):
    type: TransactionType
    amount: int = Field(ge=0)
    description: str
    reference_id: str = Field(alias="referenceId")
    parent_txn_id: str | None = Field(default=None, alias="parentTxnId")
    status: TransactionStatus = "completed"


class NotificationRecord(_DocumentRecord):
    user_id: str = Field(alias="userId")
    type: str
    title: str
    message: str
    reference_id: str | None = Field(default=None, alias="referenceId")
    read: bool = False


class LogEntryRecord(_DocumentRecord):
    action: str
    entity_type: str = Field(alias="entityType")
    entity_id: str = Field(alias="entityId")
    actor_id: str = Field(default="system", alias="actorId")
    details: dict[str, Any] = Field(default_factory=dict)
