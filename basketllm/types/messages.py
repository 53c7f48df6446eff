"""Message type definitions."""

import json
from typing import Literal, Optional, Union
from pydantic import BaseModel, model_validator


MessageRole = Literal["system", "user", "assistant"]
ContentType = Literal["text", "image_url"]


class ContentPart(BaseModel):
    """Content part for multimodal messages."""

    type: ContentType
    text: Optional[str] = None
    image_url: Optional[dict[str, str]] = None

    @model_validator(mode="after")
    def validate_content(self) -> "ContentPart":
        """Validate that the part carries the field matching its type."""
        if self.type == "text" and self.text is None:
            raise ValueError("text content must be provided when type='text'")
        if self.type == "image_url" and not (self.image_url and self.image_url.get("url")):
            raise ValueError("image_url.url must be provided for image content")
        return self


class Message(BaseModel):
    """Chat message following OpenAI format."""

    role: MessageRole
    content: Union[str, list[ContentPart]]

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role="assistant", content=content)

    @classmethod
    def with_image(
        cls,
        text: str,
        image_url: str,
        detail: Literal["auto", "low", "high"] = "auto"
    ) -> "Message":
        """Create a user message with text and image."""
        return cls(
            role="user",
            content=[
                ContentPart(type="text", text=text),
                ContentPart(type="image_url", image_url={"url": image_url, "detail": detail}),
            ]
        )

    def has_images(self) -> bool:
        """Whether the message carries at least one image part."""
        if isinstance(self.content, str):
            return False
        return any(part.type == "image_url" for part in self.content)

    def text_content(self) -> str:
        """Text of the message with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text or "" for part in self.content if part.type == "text")

    def cache_content(self) -> str:
        """Canonical string form of the content, used for cache keys."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(
            [part.model_dump(exclude_none=True) for part in self.content],
            sort_keys=True,
            separators=(",", ":"),
        )
