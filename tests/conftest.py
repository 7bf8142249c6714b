# File: tests/conftest.py

from unittest.mock import MagicMock

import pytest

from metals_client.host import HostEditor


@pytest.fixture
def mock_host():
    """A `HostEditor` mock: async methods are AsyncMocks, the rest MagicMocks."""
    host = MagicMock(spec=HostEditor)
    host.current_document_uri.return_value = None
    host.cursor_position.return_value = None
    host.show_quickpick.return_value = None
    host.show_prompt.return_value = False
    host.request_input.return_value = None
    host.is_doctor_visible.return_value = False
    return host
