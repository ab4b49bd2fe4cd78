import pytest

from chat_core.store.conversation_store import ConversationStore
from chat_core.tests.fakes import ENDPOINT


@pytest.fixture
def make_store():
    def _make(transport) -> ConversationStore:
        return ConversationStore(transport=transport, endpoint=ENDPOINT)

    return _make
