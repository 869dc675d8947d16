from __future__ import annotations

import base64
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator


class ProductGroup(Enum):
    clothes = 1
    shoes = 2
    tobacco = 3
    perfumery = 4
    tires = 5
    electronics = 6
    pharma = 7
    milk = 8
    bicycle = 9
    wheelchairs = 10

    @property
    def code(self) -> int:
        return self.value


class DocumentType(Enum):
    LP_INTRODUCE_GOODS = "MANUAL"
    LP_INTRODUCE_GOODS_CSV = "CSV"
    LP_INTRODUCE_GOODS_XML = "XML"

    @property
    def format(self) -> str:
        return self.value


def _enum_by_name(enum_cls: type[Enum], raw: Any) -> Any:
    if isinstance(raw, enum_cls) or not isinstance(raw, str):
        return raw
    key = raw.strip()
    for member in enum_cls:
        if member.name.lower() == key.lower():
            return member
    return raw


class CreationDocumentData(BaseModel):
    product_document: str
    product_group: ProductGroup
    document_type: DocumentType
    token: str

    @field_validator("product_group", mode="before")
    @classmethod
    def _product_group_by_name(cls, value: Any) -> Any:
        return _enum_by_name(ProductGroup, value)

    @field_validator("document_type", mode="before")
    @classmethod
    def _document_type_by_name(cls, value: Any) -> Any:
        return _enum_by_name(DocumentType, value)


class DocumentCreationRequest(BaseModel):
    document_format: str
    product_document: str
    product_group: int
    signature: str
    type: str


def encode_base64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def build_creation_request(document: CreationDocumentData, signature: str) -> DocumentCreationRequest:
    return DocumentCreationRequest(
        document_format=document.document_type.format,
        product_document=encode_base64(document.product_document),
        product_group=document.product_group.code,
        signature=encode_base64(signature),
        type=document.document_type.name,
    )
