"""Test the repostore module."""

TEST_BUCKET = "git-test"
TEST_PREFIX = "repositories/repo-42"

S3_TEST_CONFIG = {
    "endpoint_url": "http://127.0.0.1:38483",
    "access_key_id": "minio",
    "secret_access_key": "test-minio-password-123",
    "region_name": "us-east-1",
}
