from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional, Union

Action = Literal["insert", "update", "delete"]

class TransactionOperation(BaseModel):
    action: Action
    table: str
    id: Optional[Union[int, str]] = None
    data: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.action in {"update", "delete"} and self.id is None:
            raise ValueError(f'"id" is required for {self.action}')
        if self.action in {"insert", "update"} and self.data is None:
            raise ValueError(f'"data" is required for {self.action}')
        return self

class TransactionRequest(BaseModel):
    operations: List[TransactionOperation] = Field(min_length=1)

class TransactionResult(BaseModel):
    results: List[Dict[str, Any]]

class TableInfo(BaseModel):
    table_name: str

class ColumnInfo(BaseModel):
    name: str
    kind: str
    nullable: bool
    primary_key: bool
    has_default: bool

class LoginIn(BaseModel):
    login: str = Field(min_length=1)
    password: str = Field(min_length=1)

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]
