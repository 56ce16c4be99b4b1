import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from botocore.exceptions import ClientError

from storage_browser.credentials import StorageCredentials
from storage_browser.services import (
    PROJECT_HEADER,
    BackendError,
    NotConnectedError,
    PreviewUnavailableError,
    StorageGateway,
    TransferCancelledError,
    progress_percent,
)


def client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeEvents:
    def __init__(self):
        self.handlers = []

    def register(self, event_name, handler):
        self.handlers.append((event_name, handler))


class FakeBody:
    def __init__(self, data):
        self.data = data
        self.closed = False

    def read(self):
        return self.data

    def close(self):
        self.closed = True


class FakeS3Client:
    def __init__(
        self,
        buckets=(),
        object_responses=None,
        head_object_responses=None,
        locations=None,
        objects=None,
        delete_errors=None,
        transfer_sequences=None,
        list_buckets_error=None,
    ):
        self.meta = SimpleNamespace(events=FakeEvents())
        self.buckets = list(buckets)
        self.object_responses = {name: iter(responses) for name, responses in (object_responses or {}).items()}
        self.head_object_responses = head_object_responses or {}
        self.locations = locations or {}
        self.objects = objects or {}
        self.delete_errors = delete_errors or {}
        self.transfer_sequences = transfer_sequences or {}
        self.list_buckets_error = list_buckets_error
        self.list_objects_kwargs = []
        self.head_object_calls = []
        self.delete_objects_calls = []
        self.delete_object_calls = []
        self.copy_object_calls = []
        self.put_object_calls = []
        self.upload_file_calls = []
        self.upload_file_configs = []
        self.download_file_calls = []

    def list_buckets(self):
        if self.list_buckets_error:
            raise self.list_buckets_error
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return {"Buckets": [{"Name": name, "CreationDate": created} for name in self.buckets]}

    def get_bucket_location(self, Bucket):
        location = self.locations.get(Bucket)
        if isinstance(location, Exception):
            raise location
        return {"LocationConstraint": location}

    def list_objects_v2(self, **kwargs):
        self.list_objects_kwargs.append(kwargs)
        response = next(self.object_responses[kwargs["Bucket"]])
        if isinstance(response, Exception):
            raise response
        return response

    def head_object(self, **kwargs):
        self.head_object_calls.append(kwargs)
        response = self.head_object_responses.get((kwargs["Bucket"], kwargs["Key"]), {})
        if isinstance(response, Exception):
            raise response
        return response

    def get_object(self, **kwargs):
        return {"Body": FakeBody(self.objects[(kwargs["Bucket"], kwargs["Key"])])}

    def put_object(self, **kwargs):
        self.put_object_calls.append(kwargs)

    def copy_object(self, **kwargs):
        self.copy_object_calls.append(kwargs)

    def delete_object(self, **kwargs):
        self.delete_object_calls.append((kwargs["Bucket"], kwargs["Key"]))

    def delete_objects(self, Bucket, Delete):
        keys = [item["Key"] for item in Delete["Objects"]]
        self.delete_objects_calls.append((Bucket, keys, Delete.get("Quiet")))
        errors = [
            {"Key": key, "Code": self.delete_errors[key], "Message": "Access Denied"}
            for key in keys
            if key in self.delete_errors
        ]
        return {"Errors": errors} if errors else {}

    def download_file(self, bucket, key, filename, Callback=None, Config=None):
        self.download_file_calls.append((bucket, key, filename))
        if Callback:
            for amount in self.transfer_sequences.get(("download", bucket, key), []):
                Callback(amount)

    def upload_file(self, filename, bucket, key, Callback=None, Config=None):
        self.upload_file_calls.append((filename, bucket, key))
        self.upload_file_configs.append(Config)
        if Callback:
            for amount in self.transfer_sequences.get(("upload", bucket, key), []):
                Callback(amount)


def connected_gateway(fake_client, project_id=None):
    factory_calls = []

    def factory(*args, **kwargs):
        factory_calls.append((args, kwargs))
        return fake_client

    gateway = StorageGateway(client_factory=factory)
    gateway.connect(StorageCredentials(access_key="access", secret_key="secret"), project_id=project_id)
    return gateway, factory_calls


class StorageGatewayConnectionTests(unittest.TestCase):
    def test_requires_connection(self):
        gateway = StorageGateway(client_factory=lambda *_, **__: FakeS3Client())

        self.assertFalse(gateway.is_connected)
        with self.assertRaises(NotConnectedError):
            gateway.list_buckets()

    def test_connect_builds_client_from_credentials(self):
        gateway, calls = connected_gateway(FakeS3Client())

        self.assertTrue(gateway.is_connected)
        (args, kwargs), = calls
        self.assertEqual(("s3",), args)
        self.assertEqual("https://storage.googleapis.com", kwargs["endpoint_url"])
        self.assertEqual("access", kwargs["aws_access_key_id"])
        self.assertEqual("secret", kwargs["aws_secret_access_key"])
        self.assertEqual("auto", kwargs["region_name"])

    def test_project_header_is_added_to_bucket_listing(self):
        client = FakeS3Client()
        connected_gateway(client, project_id="my-project")

        (event_name, handler), = client.meta.events.handlers
        self.assertEqual("before-sign.s3.ListBuckets", event_name)
        request = SimpleNamespace(headers={})
        handler(request=request)
        self.assertEqual({PROJECT_HEADER: "my-project"}, request.headers)

    def test_no_project_header_without_project(self):
        client = FakeS3Client()
        connected_gateway(client)

        self.assertEqual([], client.meta.events.handlers)


class StorageGatewayListingTests(unittest.TestCase):
    def test_list_buckets_includes_location(self):
        client = FakeS3Client(
            buckets=["one", "two"],
            locations={"one": "EU", "two": client_error("AccessDenied")},
        )
        gateway, _ = connected_gateway(client)

        buckets = gateway.list_buckets()

        self.assertEqual(["one", "two"], [bucket.name for bucket in buckets])
        self.assertEqual("EU", buckets[0].location)
        self.assertIsNone(buckets[1].location)
        self.assertEqual(2024, buckets[0].created_at.year)

    def test_list_buckets_wraps_client_errors(self):
        client = FakeS3Client(list_buckets_error=client_error("InvalidAccessKeyId", "ListBuckets"))
        gateway, _ = connected_gateway(client)

        with self.assertRaises(BackendError) as ctx:
            gateway.list_buckets()
        self.assertEqual("InvalidAccessKeyId", ctx.exception.code)

    def test_list_all_keys_follows_continuation_tokens(self):
        client = FakeS3Client(
            object_responses={
                "bucket": [
                    {"Contents": [{"Key": "a/1"}], "IsTruncated": True, "NextContinuationToken": "t1"},
                    {"Contents": [{"Key": "a/2"}], "IsTruncated": False},
                ]
            }
        )
        gateway, _ = connected_gateway(client)

        keys = gateway.list_all_keys("bucket", prefix="a/")

        self.assertEqual(["a/1", "a/2"], keys)
        self.assertEqual("a/", client.list_objects_kwargs[0]["Prefix"])
        self.assertNotIn("Delimiter", client.list_objects_kwargs[0])
        self.assertNotIn("ContinuationToken", client.list_objects_kwargs[0])
        self.assertEqual("t1", client.list_objects_kwargs[1]["ContinuationToken"])

    def test_list_prefixed_returns_folders_first_and_skips_own_marker(self):
        modified = datetime(2024, 3, 1, tzinfo=timezone.utc)
        client = FakeS3Client(
            object_responses={
                "bucket": [
                    {
                        "CommonPrefixes": [{"Prefix": "docs/sub/"}],
                        "Contents": [
                            {"Key": "docs/", "Size": 0},
                            {"Key": "docs/a.txt", "Size": 12, "LastModified": modified},
                        ],
                        "IsTruncated": False,
                    }
                ]
            }
        )
        gateway, _ = connected_gateway(client)

        entries = gateway.list_prefixed("bucket", "docs/")

        self.assertEqual(["sub", "a.txt"], [entry.name for entry in entries])
        self.assertTrue(entries[0].is_folder)
        self.assertEqual(12, entries[1].size)
        self.assertEqual(modified, entries[1].updated_at)
        self.assertEqual("/", client.list_objects_kwargs[0]["Delimiter"])

    def test_listing_errors_are_wrapped(self):
        client = FakeS3Client(object_responses={"bucket": [client_error("NoSuchBucket", "ListObjectsV2")]})
        gateway, _ = connected_gateway(client)

        with self.assertRaises(BackendError) as ctx:
            gateway.list_all_keys("bucket")
        self.assertEqual("NoSuchBucket", ctx.exception.code)


class StorageGatewayMutationTests(unittest.TestCase):
    def test_put_folder_marker_appends_slash(self):
        client = FakeS3Client()
        gateway, _ = connected_gateway(client)

        gateway.put_folder_marker("bucket", "docs/new")

        self.assertEqual([{"Bucket": "bucket", "Key": "docs/new/", "Body": b""}], client.put_object_calls)

    def test_move_copies_then_deletes(self):
        client = FakeS3Client()
        gateway, _ = connected_gateway(client)

        gateway.move_object("bucket", "old/a.txt", "new/a.txt")

        self.assertEqual(
            [{"Bucket": "bucket", "Key": "new/a.txt", "CopySource": {"Bucket": "bucket", "Key": "old/a.txt"}}],
            client.copy_object_calls,
        )
        self.assertEqual([("bucket", "old/a.txt")], client.delete_object_calls)

    def test_delete_by_prefix_reports_per_key_outcomes(self):
        client = FakeS3Client(
            object_responses={
                "bucket": [{"Contents": [{"Key": "docs/"}, {"Key": "docs/a"}, {"Key": "docs/b"}], "IsTruncated": False}]
            },
            delete_errors={"docs/b": "AccessDenied"},
        )
        gateway, _ = connected_gateway(client)

        outcomes = gateway.delete_objects_by_prefix("bucket", "docs/")

        self.assertEqual(["docs/", "docs/a", "docs/b"], [outcome.key for outcome in outcomes])
        self.assertEqual([True, True, False], [outcome.ok for outcome in outcomes])
        self.assertEqual("AccessDenied", outcomes[2].error.code)
        self.assertEqual([("bucket", ["docs/", "docs/a", "docs/b"], True)], client.delete_objects_calls)

    def test_delete_keys_are_sent_in_chunks(self):
        client = FakeS3Client()
        gateway, _ = connected_gateway(client)
        keys = [f"k{index}" for index in range(1001)]

        outcomes = gateway.delete_keys("bucket", keys)

        self.assertEqual(1001, len(outcomes))
        self.assertEqual([1000, 1], [len(call[1]) for call in client.delete_objects_calls])

    def test_delete_by_empty_prefix_is_refused(self):
        client = FakeS3Client()
        gateway, _ = connected_gateway(client)

        with self.assertRaises(ValueError):
            gateway.delete_objects_by_prefix("bucket", "")
        self.assertEqual([], client.delete_objects_calls)


class StorageGatewayTransferTests(unittest.TestCase):
    def test_upload_reports_increasing_percentages(self):
        client = FakeS3Client(transfer_sequences={("upload", "bucket", "a.bin"): [25, 0, 25, 50]})
        gateway, _ = connected_gateway(client)
        progress = []

        gateway.upload_object("bucket", "a.bin", "/tmp/a.bin", total_size=100, progress_callback=progress.append)

        self.assertEqual([25, 50, 100], progress)
        self.assertEqual([("/tmp/a.bin", "bucket", "a.bin")], client.upload_file_calls)
        self.assertIsNotNone(client.upload_file_configs[0])

    def test_upload_cancellation_raises(self):
        client = FakeS3Client(transfer_sequences={("upload", "bucket", "a.bin"): [10]})
        gateway, _ = connected_gateway(client)

        with self.assertRaises(TransferCancelledError):
            gateway.upload_object("bucket", "a.bin", "/tmp/a.bin", total_size=100, cancel_requested=lambda: True)

    def test_download_reads_size_for_progress(self):
        client = FakeS3Client(
            head_object_responses={("bucket", "big"): {"ContentLength": 200}},
            transfer_sequences={("download", "bucket", "big"): [50, 150]},
        )
        gateway, _ = connected_gateway(client)
        progress = []

        gateway.download_object("bucket", "big", "/tmp/big", progress_callback=progress.append)

        self.assertEqual([25, 100], progress)
        self.assertEqual([("bucket", "big", "/tmp/big")], client.download_file_calls)

    def test_progress_percent_rounds_half_up_and_clamps(self):
        self.assertEqual(0, progress_percent(5, 0))
        self.assertEqual(1, progress_percent(1, 200))
        self.assertEqual(33, progress_percent(1, 3))
        self.assertEqual(100, progress_percent(150, 100))


class StorageGatewayDetailsTests(unittest.TestCase):
    def test_object_details(self):
        client = FakeS3Client(
            head_object_responses={
                ("bucket", "a.png"): {
                    "ContentLength": 3,
                    "ContentType": "image/png",
                    "ETag": '"abc"',
                    "StorageClass": "STANDARD",
                    "Metadata": {"owner": "me"},
                }
            }
        )
        gateway, _ = connected_gateway(client)

        details = gateway.get_object_details("bucket", "a.png")

        self.assertEqual(3, details.size)
        self.assertEqual("image/png", details.content_type)
        self.assertEqual({"owner": "me"}, details.metadata)
        self.assertFalse(details.is_folder)

    def test_preview_of_image(self):
        client = FakeS3Client(
            head_object_responses={("bucket", "a.png"): {"ContentLength": 3, "ContentType": "image/png"}},
            objects={("bucket", "a.png"): b"png"},
        )
        gateway, _ = connected_gateway(client)

        preview = gateway.get_preview("bucket", "a.png")

        self.assertEqual(b"png", preview.data)
        self.assertEqual("image/png", preview.content_type)

    def test_preview_rejects_unsupported_and_oversized(self):
        client = FakeS3Client(
            head_object_responses={
                ("bucket", "notes.txt"): {"ContentLength": 3, "ContentType": "text/plain"},
                ("bucket", "doc.pdf"): {"ContentLength": 5000, "ContentType": "application/pdf"},
            }
        )
        gateway, _ = connected_gateway(client)

        with self.assertRaises(PreviewUnavailableError):
            gateway.get_preview("bucket", "notes.txt")
        with self.assertRaises(PreviewUnavailableError):
            gateway.get_preview("bucket", "doc.pdf", max_bytes=1000)


if __name__ == "__main__":
    unittest.main()
