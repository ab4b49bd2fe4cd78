from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from .models import Message, utcnow


@dataclass
class Conversation:
    id: str
    name: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message
