"""
Tests for ArtifactLifecycle.

Tests cover:
- Authenticated download: token, privilege, format, rate limit, headers
- Authenticated deletion and redirect
- Scheduled deletion re-validation and idempotence
"""

import unittest
from urllib.parse import parse_qs, urlparse

from site_exporter.core.context import Requester
from site_exporter.core.models import ArchiveArtifact
from site_exporter.core.rate_limiter import DownloadRateLimiter
from site_exporter.export.access import (
    DELETE_ACTION,
    DOWNLOAD_ACTION,
    AccessPolicy,
    ActionTokenService,
)
from site_exporter.export.lifecycle import (
    AUTO_DELETE_DELAY_SECONDS,
    DELETE_HOOK,
    DOWNLOAD_CHUNK_SIZE,
    ArtifactLifecycle,
    ArtifactRequest,
    ExportFileValidator,
    content_type_for,
    download_headers,
)
from site_exporter.export.location import ExportLocation
from site_exporter.io_ops.path_guard import PathGuard
from site_exporter.scheduler.job_queue import JobQueue

from tests.test_utils import BaseTestCase, FakeFilesystem, FixedClock, make_logger

ADMIN_URL = "https://example.com/wp-admin/"
UPLOADS_DIR = "/srv/site/wp-content/uploads"
EXPORT_DIR = f"{UPLOADS_DIR}/site-exporter-exports"
ARCHIVE_NAME = "site_export_sse_abc1234_blog_2024-01-01_00-00-00.zip"
ARCHIVE_PATH = f"{EXPORT_DIR}/{ARCHIVE_NAME}"
CONTENT = bytes(range(256)) * 80  # 20480 bytes, three chunks


class LifecycleTestCase(BaseTestCase):
    """Shared wiring over an in-memory filesystem."""

    def setUp(self):
        super().setUp()
        self.clock = FixedClock()
        self.fs = FakeFilesystem(self.clock)
        self.fs.add_dir(EXPORT_DIR)
        self.fs.add_file(ARCHIVE_PATH, CONTENT)

        self.store, self.activity_log, log = make_logger(clock=self.clock)
        self.tokens = ActionTokenService("test-secret", clock=self.clock)
        policy = AccessPolicy(ADMIN_URL)
        location = ExportLocation(self.fs, UPLOADS_DIR, "https://example.com/wp-content/uploads")
        self.jobs = JobQueue(self.store, log, clock=self.clock)
        self.lifecycle = ArtifactLifecycle(
            fs=self.fs,
            validator=ExportFileValidator(self.fs, PathGuard(self.fs, log), policy, location, log),
            rate_limiter=DownloadRateLimiter(self.store, clock=self.clock),
            tokens=self.tokens,
            policy=policy,
            jobs=self.jobs,
            log=log,
            clock=self.clock,
        )
        self.admin = Requester(
            user_id=1,
            ip="198.51.100.1",
            capabilities=frozenset({"manage_options"}),
            referer=f"{ADMIN_URL}tools.php?page=site-exporter",
        )

    def request(self, action, filename=ARCHIVE_NAME, requester=None, token=None):
        requester = requester or self.admin
        if token is None:
            token = self.tokens.issue(action, requester.user_id)
        return ArtifactRequest(filename=filename, token=token, requester=requester)

    def download(self, **kwargs):
        return self.lifecycle.download(self.request(DOWNLOAD_ACTION, **kwargs))

    def delete(self, **kwargs):
        return self.lifecycle.delete(self.request(DELETE_ACTION, **kwargs))


class TestDownload(LifecycleTestCase):
    """Test the authenticated download path."""

    def test_successful_download_streams_file(self):
        response = self.download()

        self.assertEqual(response.status, 200)
        chunks = list(response.body)
        self.assertEqual(b"".join(chunks), CONTENT)
        self.assertTrue(all(len(chunk) <= DOWNLOAD_CHUNK_SIZE for chunk in chunks))
        self.assertEqual(len(chunks), 3)

    def test_download_headers(self):
        response = self.download()
        headers = response.headers

        self.assertEqual(headers["Content-Type"], "application/zip")
        self.assertEqual(headers["Content-Disposition"], f'attachment; filename="{ARCHIVE_NAME}"')
        self.assertEqual(headers["Content-Length"], str(len(CONTENT)))
        self.assertEqual(headers["Cache-Control"], "no-cache, no-store, must-revalidate")
        self.assertEqual(headers["Pragma"], "no-cache")
        self.assertEqual(headers["Expires"], "0")
        self.assertEqual(headers["X-Content-Type-Options"], "nosniff")
        self.assertEqual(headers["X-Frame-Options"], "DENY")

    def test_invalid_token_rejected(self):
        response = self.download(token="0" * 20)
        self.assertEqual(response.status, 403)
        self.assertIsNone(response.body)
        self.assertEqual(self.activity_log.entries()[-1].level, "security")

    def test_token_for_other_action_rejected(self):
        token = self.tokens.issue(DELETE_ACTION, 1)
        self.assertEqual(self.download(token=token).status, 403)

    def test_unprivileged_user_rejected(self):
        user = Requester(user_id=2, referer=ADMIN_URL)
        response = self.download(requester=user)
        self.assertEqual(response.status, 403)

    def test_invalid_filename_rejected_even_if_file_exists(self):
        """Names outside the archive grammar are refused regardless of disk state."""
        for filename in ("backup.zip", "db_dump_blog_2024-01-01_00-00-00.sql", "index.php"):
            with self.subTest(filename=filename):
                self.fs.add_file(f"{EXPORT_DIR}/{filename}", b"secret")
                response = self.download(filename=filename)
                self.assertEqual(response.status, 403)
                self.assertIsNone(response.body)

    def test_path_separators_stripped_from_filename(self):
        """Separators are removed before validation so only the export directory is reachable."""
        response = self.download(filename=f"../../{ARCHIVE_NAME}")
        self.assertEqual(response.status, 200)
        self.assertEqual(b"".join(response.body), CONTENT)

    def test_rate_limit(self):
        """A second download within 60 seconds is refused with 429."""
        self.assertEqual(self.download().status, 200)

        self.clock.advance(59)
        response = self.download()
        self.assertEqual(response.status, 429)

        self.clock.advance(1)
        self.assertEqual(self.download().status, 200)

    def test_failed_download_does_not_use_rate_limit(self):
        """Only requests that pass validation count against the 60 second window."""
        missing = "site_export_sse_fff0000_blog_2024-01-01_00-00-00.zip"
        self.assertEqual(self.download(filename=missing).status, 404)

        foreign = Requester(
            user_id=1, capabilities=frozenset({"manage_options"}), referer="https://evil.test/"
        )
        self.assertEqual(self.download(requester=foreign).status, 403)

        self.assertEqual(self.download().status, 200)

    def test_empty_file_does_not_use_rate_limit(self):
        empty_name = "site_export_sse_fff0000_blog_2024-01-01_00-00-00.zip"
        self.fs.add_file(f"{EXPORT_DIR}/{empty_name}", b"")

        self.assertEqual(self.download(filename=empty_name).status, 403)
        self.assertEqual(self.download().status, 200)

    def test_close_releases_unread_body(self):
        response = self.download()

        response.close()

        self.assertTrue(response.handle.closed)
        self.assertEqual(list(response.body), [])

    def test_close_after_full_read(self):
        response = self.download()
        self.assertEqual(b"".join(response.body), CONTENT)

        response.close()
        self.assertTrue(response.handle.closed)

    def test_missing_file(self):
        self.fs.delete(ARCHIVE_PATH)
        self.assertEqual(self.download().status, 404)

    def test_foreign_referer_rejected(self):
        requester = Requester(
            user_id=1, capabilities=frozenset({"manage_options"}), referer="https://evil.test/"
        )
        self.assertEqual(self.download(requester=requester).status, 403)

    def test_empty_file_rejected(self):
        self.fs.files[ARCHIVE_PATH] = b""
        self.assertEqual(self.download().status, 403)

    def test_unreadable_file_rejected(self):
        self.fs.unreadable.add(ARCHIVE_PATH)
        self.assertEqual(self.download().status, 403)

    def test_successful_download_records_no_failures(self):
        response = self.download()
        list(response.body)
        self.assertEqual(self.activity_log.entries(), [])


class TestContentType(unittest.TestCase):
    def test_closed_mapping(self):
        self.assertEqual(content_type_for("a.zip"), "application/zip")
        self.assertEqual(content_type_for("a.SQL"), "application/sql")
        for filename in ("a.html", "a.svg", "a.js", "a", "a.php"):
            with self.subTest(filename=filename):
                self.assertEqual(content_type_for(filename), "application/octet-stream")

    def test_disposition_strips_quotes(self):
        headers = download_headers('a"b.zip', 10)
        self.assertEqual(headers["Content-Disposition"], 'attachment; filename="ab.zip"')


class TestManualDeletion(LifecycleTestCase):
    """Test the authenticated deletion path."""

    def test_successful_deletion_redirects(self):
        response = self.delete()

        self.assertEqual(response.status, 302)
        self.assertEqual(response.location, f"{ADMIN_URL}tools.php?page=site-exporter")
        self.assertEqual(response.notice.level, "success")
        self.assertFalse(self.fs.exists(ARCHIVE_PATH))

    def test_invalid_filename_rejected_even_if_file_exists(self):
        self.fs.add_file(f"{EXPORT_DIR}/keep.zip", b"x")
        response = self.delete(filename="keep.zip")

        self.assertEqual(response.status, 403)
        self.assertEqual(response.notice.level, "error")
        self.assertTrue(self.fs.exists(f"{EXPORT_DIR}/keep.zip"))

    def test_invalid_token(self):
        response = self.delete(token="bad")
        self.assertEqual(response.status, 403)
        self.assertTrue(self.fs.exists(ARCHIVE_PATH))

    def test_unprivileged(self):
        response = self.delete(requester=Requester(user_id=5, referer=ADMIN_URL))
        self.assertEqual(response.status, 403)
        self.assertTrue(self.fs.exists(ARCHIVE_PATH))

    def test_missing_file(self):
        self.fs.delete(ARCHIVE_PATH)
        self.assertEqual(self.delete().status, 404)

    def test_failed_delete_reports_error(self):
        self.fs.undeletable.add(ARCHIVE_PATH)
        response = self.delete()

        self.assertEqual(response.status, 302)
        self.assertEqual(response.notice.level, "error")
        self.assertEqual(self.activity_log.entries()[-1].level, "error")


class TestScheduledDeletion(LifecycleTestCase):
    """Test the auto-deletion job handler."""

    def test_deletes_file(self):
        self.assertTrue(self.lifecycle.handle_scheduled_deletion(ARCHIVE_PATH))
        self.assertFalse(self.fs.exists(ARCHIVE_PATH))

    def test_second_call_is_noop_success(self):
        """Deleting an already-deleted file is not an error."""
        self.assertTrue(self.lifecycle.handle_scheduled_deletion(ARCHIVE_PATH))
        self.assertTrue(self.lifecycle.handle_scheduled_deletion(ARCHIVE_PATH))
        self.assertEqual(self.activity_log.entries(), [])

    def test_path_outside_export_dir_rejected(self):
        other = f"/srv/site/{ARCHIVE_NAME}"
        self.fs.add_file(other, b"x")

        self.assertFalse(self.lifecycle.handle_scheduled_deletion(other))
        self.assertTrue(self.fs.exists(other))

    def test_traversal_payload_rejected(self):
        self.assertFalse(
            self.lifecycle.handle_scheduled_deletion(f"{EXPORT_DIR}/../{ARCHIVE_NAME}")
        )

    def test_invalid_filename_rejected(self):
        path = f"{EXPORT_DIR}/index.php"
        self.fs.add_file(path, b"<?php")

        self.assertFalse(self.lifecycle.handle_scheduled_deletion(path))
        self.assertTrue(self.fs.exists(path))

    def test_schedule_and_fire(self):
        """The registered job deletes the archive once its delay has passed."""
        artifact = ArchiveArtifact(ARCHIVE_NAME, ARCHIVE_PATH)
        self.assertTrue(self.lifecycle.schedule_deletion(artifact))
        self.assertFalse(self.lifecycle.schedule_deletion(artifact))

        self.clock.advance(AUTO_DELETE_DELAY_SECONDS - 1)
        self.assertEqual(self.jobs.run_due(), [])
        self.clock.advance(1)
        runs = self.jobs.run_due()

        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].job.hook, DELETE_HOOK)
        self.assertFalse(self.fs.exists(ARCHIVE_PATH))

    def test_scheduled_deletion_races_manual_deletion(self):
        self.assertEqual(self.delete().status, 302)
        self.assertTrue(self.lifecycle.handle_scheduled_deletion(ARCHIVE_PATH))


class TestActionUrls(LifecycleTestCase):
    def test_download_url_carries_verifiable_token(self):
        url = self.lifecycle.download_url(ARCHIVE_NAME, self.admin)
        query = parse_qs(urlparse(url).query)

        self.assertTrue(url.startswith(ADMIN_URL))
        self.assertEqual(query["sse_secure_download"], [ARCHIVE_NAME])
        self.assertTrue(
            self.tokens.verify(query["sse_download_nonce"][0], DOWNLOAD_ACTION, 1)
        )

    def test_delete_url(self):
        query = parse_qs(urlparse(self.lifecycle.delete_url(ARCHIVE_NAME, self.admin)).query)
        self.assertEqual(query["sse_delete_export"], [ARCHIVE_NAME])
        self.assertTrue(self.tokens.verify(query["sse_delete_nonce"][0], DELETE_ACTION, 1))


if __name__ == "__main__":
    unittest.main()
