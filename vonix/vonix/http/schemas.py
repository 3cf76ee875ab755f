from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp")


class WireModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        coerce_numbers_to_str=True,
    )


# ---- Embeds ----

class EmbedAuthorDto(WireModel):
    name: Optional[str] = None
    icon_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("icon_url", "iconURL")
    )
    url: Optional[str] = None


class EmbedFieldDto(WireModel):
    name: str
    value: str
    inline: bool | None = None


class EmbedDto(WireModel):
    title: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    color: Optional[int] = None
    thumbnail: Optional[str] = None
    image: Optional[str] = None
    author: EmbedAuthorDto | None = None
    fields: List[EmbedFieldDto] = Field(default_factory=list)

    @field_validator("fields", mode="before")
    @classmethod
    def _fields_default(cls, value):
        return value or []


class AttachmentDto(WireModel):
    id: str
    filename: str
    url: str
    proxy_url: Optional[str] = None
    size: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        if self.content_type and self.content_type.startswith("image/"):
            return True
        return self.filename.lower().endswith(IMAGE_EXTENSIONS)


# ---- Content blocks ----

class TextBlock(WireModel):
    kind: Literal["text"] = "text"
    title: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    color: Optional[int] = None
    author_name: Optional[str] = None
    author_icon_url: Optional[str] = None
    author_url: Optional[str] = None


class ImageBlock(WireModel):
    kind: Literal["image"] = "image"
    url: str
    role: Literal["image", "thumbnail", "attachment"] = "image"
    filename: Optional[str] = None


class FieldBlock(WireModel):
    kind: Literal["field"] = "field"
    name: str
    value: str
    inline: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, FieldBlock], Field(discriminator="kind")
]


def embed_blocks(embed: EmbedDto) -> list[ContentBlock]:
    """Break an embed into the ordered blocks a renderer walks."""

    blocks: list[ContentBlock] = []
    author = embed.author
    if embed.title or embed.description or (author and author.name):
        blocks.append(
            TextBlock(
                title=embed.title,
                description=embed.description,
                url=embed.url,
                color=embed.color,
                author_name=author.name if author else None,
                author_icon_url=author.icon_url if author else None,
                author_url=author.url if author else None,
            )
        )
    for f in embed.fields:
        blocks.append(FieldBlock(name=f.name, value=f.value, inline=bool(f.inline)))
    if embed.image:
        blocks.append(ImageBlock(url=embed.image, role="image"))
    if embed.thumbnail:
        blocks.append(ImageBlock(url=embed.thumbnail, role="thumbnail"))
    return blocks


def attachment_block(attachment: AttachmentDto) -> ContentBlock:
    if attachment.is_image:
        return ImageBlock(
            url=attachment.url, role="attachment", filename=attachment.filename
        )
    return TextBlock(title=attachment.filename, url=attachment.url)


# ---- Chat ----

def _decode_json_list(value):
    """Accept a list or its JSON encoded form; bad input becomes ``[]``."""

    if value is None or value == "":
        return None
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            logger.debug("chat.schema dropping undecodable blob")
            return []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class ChatMessage(WireModel):
    id: int | str
    discord_message_id: Optional[str] = None
    author_name: str
    author_avatar: Optional[str] = None
    content: str = ""
    embeds: List[EmbedDto] | None = None
    attachments: List[AttachmentDto] | None = None
    timestamp: Optional[datetime] = None

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value):
        return "" if value is None else value

    @field_validator("embeds", "attachments", mode="before")
    @classmethod
    def _decode_blobs(cls, value):
        return _decode_json_list(value)

    @property
    def key(self) -> str:
        return str(self.id)

    def blocks(self) -> list[ContentBlock]:
        result: list[ContentBlock] = []
        for attachment in self.attachments or []:
            result.append(attachment_block(attachment))
        for embed in self.embeds or []:
            result.extend(embed_blocks(embed))
        return result

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


# ---- Requests ----

class SendBody(BaseModel):
    message: str = ""


class SendResult(BaseModel):
    success: bool = True
    message: str = "Message sent"


class ClearResult(BaseModel):
    message: str
    deleted: int
