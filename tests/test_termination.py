from unittest import mock

import requests

from termination import TerminationNotifier


def make(api_url="https://api.example.com/", token="secret"):
    session = mock.Mock(spec=requests.Session)
    return TerminationNotifier(api_url, token, session=session), session


def test_posts_termination_with_bearer_token():
    notifier, session = make()
    assert notifier.notify("sess-42", 3)
    session.post.assert_called_once_with(
        "https://api.example.com/api/interview/terminate",
        json={"sessionId": "sess-42", "reason": "Multiple monitoring violations", "warningCount": 3},
        headers={"Authorization": "Bearer secret"},
        timeout=10.0,
    )


def test_skips_when_not_configured():
    notifier, session = make(api_url="")
    assert not notifier.configured
    assert not notifier.notify("sess-42", 3)

    notifier, session = make()
    assert not notifier.notify("", 3)
    session.post.assert_not_called()


def test_http_errors_are_reported_not_raised():
    notifier, session = make()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
    assert not notifier.notify("sess-42", 3)


def test_connection_errors_are_reported_not_raised():
    notifier, session = make()
    session.post.side_effect = requests.ConnectionError("refused")
    assert not notifier.notify("sess-42", 3)
