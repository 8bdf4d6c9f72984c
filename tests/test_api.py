"""
Unit tests for the LMS client, against a mocked requests session.

Client contract:
- list endpoints follow Link rel="next" until the last page
- HTTP and transport failures map onto the CanvasError family
- one bad record is skipped, it does not fail the category
"""

import unittest
from unittest import mock

import requests

from canvasterm.api import (
    ApiError,
    CanvasClient,
    DecodeError,
    NetworkError,
    RateLimited,
    Unauthorized,
    decode_records,
)
from canvasterm.model import Category, Course, UserProfile


def response(payload=None, status=200, next_url=None, headers=None, text="", bad_json=False):
    resp = mock.Mock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = text
    resp.url = "https://lms.example.edu/api/v1/x"
    resp.links = {"next": {"url": next_url}} if next_url else {}
    if bad_json:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = payload
    return resp


def make_client(*responses, side_effect=None):
    session = mock.Mock()
    session.headers = {}
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.side_effect = list(responses)
    return CanvasClient("https://lms.example.edu", "secret", session=session), session


class TestClientSetup(unittest.TestCase):
    def test_headers(self) -> None:
        _, session = make_client()
        self.assertEqual(session.headers["Authorization"], "Bearer secret")
        self.assertTrue(session.headers["User-Agent"].startswith("canvasterm/"))

    def test_rejects_non_http_url(self) -> None:
        with self.assertRaises(ValueError):
            CanvasClient("lms.example.edu", "secret", session=mock.Mock(headers={}))


class TestPagination(unittest.TestCase):
    def test_follows_next_links(self) -> None:
        client, session = make_client(
            response([{"id": 1, "name": "Algebra"}], next_url="https://lms.example.edu/api/v1/courses?page=2"),
            response([{"id": 2, "name": "Biology"}]),
        )
        courses = client.fetch(Category.COURSES)

        self.assertEqual([c.id for c in courses], [1, 2])
        self.assertEqual(session.get.call_count, 2)
        first_url = session.get.call_args_list[0].args[0]
        self.assertEqual(first_url, "https://lms.example.edu/api/v1/courses")
        self.assertEqual(session.get.call_args_list[1].args[0], "https://lms.example.edu/api/v1/courses?page=2")

    def test_calendar_context_codes_are_chunked(self) -> None:
        client, session = make_client(side_effect=lambda *a, **kw: response([]))
        client.fetch(Category.CALENDAR_EVENTS, list(range(1, 13)))

        # Two chunks (10 + 2), once for events and once for assignment entries
        self.assertEqual(session.get.call_count, 4)
        params = session.get.call_args_list[0].kwargs["params"]
        codes = [v for k, v in params if k == "context_codes[]"]
        self.assertEqual(len(codes), 10)
        self.assertEqual(codes[0], "course_1")
        self.assertIn(("type", "event"), params)
        self.assertIn(("type", "assignment"), session.get.call_args_list[2].kwargs["params"])


class TestErrorMapping(unittest.TestCase):
    def test_unauthorized(self) -> None:
        client, _ = make_client(response(status=401))
        with self.assertRaises(Unauthorized):
            client.fetch(Category.COURSES)

    def test_rate_limited(self) -> None:
        client, _ = make_client(response(status=429, headers={"Retry-After": "3"}))
        with self.assertRaises(RateLimited) as ctx:
            client.fetch(Category.COURSES)
        self.assertEqual(ctx.exception.retry_after, 3.0)

    def test_server_error(self) -> None:
        client, _ = make_client(response(status=500, text="boom"))
        with self.assertRaises(ApiError) as ctx:
            client.fetch(Category.COURSES)
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(str(ctx.exception), "HTTP 500: boom")

    def test_connection_error(self) -> None:
        client, _ = make_client(side_effect=requests.ConnectionError("unreachable"))
        with self.assertRaises(NetworkError):
            client.fetch(Category.COURSES)

    def test_bad_json(self) -> None:
        client, _ = make_client(response(bad_json=True))
        with self.assertRaises(DecodeError):
            client.fetch(Category.COURSES)

    def test_non_list_body(self) -> None:
        client, _ = make_client(response({"errors": []}))
        with self.assertRaises(DecodeError):
            client.fetch(Category.COURSES)

    def test_inaccessible_course_is_skipped(self) -> None:
        client, _ = make_client(
            response(status=404, text="not found"),
            response([{"id": 5, "course_id": 2, "name": "HW"}]),
        )
        assignments = client.fetch(Category.ASSIGNMENTS, [1, 2])
        self.assertEqual([a.id for a in assignments], [5])

    def test_other_assignment_errors_propagate(self) -> None:
        client, _ = make_client(response(status=500, text="boom"))
        with self.assertRaises(ApiError):
            client.fetch(Category.ASSIGNMENTS, [1, 2])


class TestDecodeRecords(unittest.TestCase):
    def test_skips_bad_records(self) -> None:
        payloads = [{"id": 1, "title": "ok", "message": "<p>hi</p>"}, {"title": "no id"}, "junk"]
        records = decode_records(Category.ANNOUNCEMENTS, payloads)
        self.assertEqual([r.id for r in records], [1])

    def test_odd_nested_shapes_do_not_abort_the_batch(self) -> None:
        payloads = [
            {"id": 1, "name": "Algebra", "enrollments": 5, "term": "Spring"},
            {"id": 2, "name": "Biology", "enrollments": [{"type": "student", "computed_current_score": 91.5}]},
        ]
        records = decode_records(Category.COURSES, payloads)
        self.assertEqual([r.id for r in records], [1, 2])
        self.assertIsNone(records[0].current_score)

    def test_any_decode_failure_skips_only_that_record(self) -> None:
        real = Course.from_api
        calls = []

        def flaky(data, now=None):
            calls.append(data["id"])
            if data["id"] == 1:
                raise AttributeError("'int' object has no attribute 'get'")
            return real(data, now)

        with mock.patch.object(Course, "from_api", side_effect=flaky):
            records = decode_records(Category.COURSES, [{"id": 1}, {"id": 2, "name": "Biology"}])
        self.assertEqual(calls, [1, 2])
        self.assertEqual([r.id for r in records], [2])


class TestProfile(unittest.TestCase):
    def test_fetch_profile(self) -> None:
        client, session = make_client(response({"id": 7, "name": "Ada Lovelace", "short_name": "Ada"}))
        profile = client.fetch_profile()
        self.assertEqual(profile, UserProfile(id=7, name="Ada Lovelace", short_name="Ada"))
        self.assertTrue(session.get.call_args[0][0].endswith("/api/v1/users/self"))

    def test_non_object_profile_is_a_decode_error(self) -> None:
        client, _ = make_client(response([{"id": 7}]))
        with self.assertRaises(DecodeError):
            client.fetch_profile()

    def test_profile_without_id_is_a_decode_error(self) -> None:
        client, _ = make_client(response({"name": "Nobody"}))
        with self.assertRaises(DecodeError):
            client.fetch_profile()


if __name__ == "__main__":
    unittest.main()
