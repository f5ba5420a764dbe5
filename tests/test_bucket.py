"""Tests for bucket key derivation."""

from restguard.core.security import fingerprint_credential
from restguard.ratelimit.bucket import BucketResolver, host_from_url, make_bucket_key


class TestMakeBucketKey:
    """Tests for the pure bucket key function."""

    def test_deterministic(self):
        """Test the same host and credential always give the same key."""
        assert make_bucket_key("canvas.example.edu", "tok") == make_bucket_key(
            "canvas.example.edu", "tok"
        )

    def test_shape(self):
        """Test keys are host:fingerprint."""
        key = make_bucket_key("canvas.example.edu", "tok")
        assert key == f"canvas.example.edu:{fingerprint_credential('tok')}"

    def test_credential_not_in_key(self):
        """Test the raw credential never appears in the key."""
        assert "super-secret" not in make_bucket_key("canvas.example.edu", "super-secret")

    def test_host_differs(self):
        """Test different hosts never share a bucket."""
        assert make_bucket_key("a.example.edu", "tok") != make_bucket_key("b.example.edu", "tok")

    def test_credential_differs(self):
        """Test different credentials never share a bucket."""
        assert make_bucket_key("canvas.example.edu", "t1") != make_bucket_key(
            "canvas.example.edu", "t2"
        )

    def test_host_case_insensitive(self):
        """Test host names are normalized to lower case."""
        assert make_bucket_key("Canvas.Example.EDU", "") == "canvas.example.edu:anonymous"

    def test_missing_host(self):
        """Test an empty host falls back to "default"."""
        assert make_bucket_key("", None) == "default:anonymous"


class TestBucketResolver:
    """Tests for bucket resolution precedence."""

    def test_computed_key(self):
        """Test the computed key is used without overrides."""
        resolver = BucketResolver()
        assert resolver.resolve("canvas.example.edu", "tok") == make_bucket_key(
            "canvas.example.edu", "tok"
        )

    def test_configured_host_override(self):
        """Test a configured host mapping wins over the computed key."""
        resolver = BucketResolver({"Files.Example.edu": "files"})
        assert resolver.resolve("files.example.edu", "tok") == "files"

    def test_request_override_wins(self):
        """Test a per-request bucket wins over everything."""
        resolver = BucketResolver({"files.example.edu": "files"})
        assert resolver.resolve("files.example.edu", "tok", override="bulk") == "bulk"

    def test_resolve_url(self):
        """Test hosts are taken from absolute URLs."""
        resolver = BucketResolver()
        key = resolver.resolve_url("https://cdn.example.edu/files/1?download=1", "tok")
        assert key.startswith("cdn.example.edu:")


def test_host_from_url():
    """Test host extraction, including unparsable input."""
    assert host_from_url("https://canvas.example.edu/api/v1/courses") == "canvas.example.edu"
    assert host_from_url("/api/v1/courses") == ""
