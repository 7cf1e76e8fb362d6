import requests
from unittest.mock import MagicMock, patch

from utils.update_check import RELEASES_URL, check_update, parse_version


class TestUpdateCheck:

    def test_parse_version(self):
        assert parse_version("v1.2.3") == (1, 2, 3)
        assert parse_version("1.4") == (1, 4, 0)
        assert parse_version("dev") is None

    @patch("utils.update_check.requests.head")
    def test_newer_release(self, mock_head):
        mock_head.return_value = MagicMock(url="https://github.com/kondukto-io/kdt/releases/tag/v1.3.0")

        assert check_update("v1.2.9") == (True, "v1.3.0")
        mock_head.assert_called_once_with(RELEASES_URL, allow_redirects=True, timeout=3)

    @patch("utils.update_check.requests.head")
    def test_up_to_date(self, mock_head):
        mock_head.return_value = MagicMock(url="https://github.com/kondukto-io/kdt/releases/tag/v1.2.0")

        assert check_update("v1.2.0") == (False, "v1.2.0")

    @patch("utils.update_check.requests.head")
    def test_no_redirect(self, mock_head):
        mock_head.return_value = MagicMock(url=RELEASES_URL)

        assert check_update("v1.0.0") == (False, "v1.0.0")

    @patch("utils.update_check.requests.head")
    def test_network_failure_is_silent(self, mock_head):
        mock_head.side_effect = requests.exceptions.Timeout("timed out")

        assert check_update("v1.0.0") == (False, "v1.0.0")

    @patch("utils.update_check.requests.head")
    def test_empty_version_skips_check(self, mock_head):
        assert check_update("") == (False, "")
        mock_head.assert_not_called()
