import pytest
from botocore.exceptions import EndpointConnectionError
from fakes import FakeEC2Backend, client_error

from capaws.ami import ami_name_pattern, lookup_default_ami
from capaws.errors import BackendError, ImageLookupError

pytestmark = [pytest.mark.unit]


class TestNamePattern:
    def test_strips_version_prefix(self):
        assert ami_name_pattern("ubuntu", "18.04", "v1.13.2") == "capa-ami-ubuntu-18.04-1.13.2-*"

    def test_plain_version(self):
        assert ami_name_pattern("centos", "7", "1.12.0") == "capa-ami-centos-7-1.12.0-*"


class TestLookupDefaultAMI:
    def test_latest_creation_date_wins(self):
        backend = FakeEC2Backend(images=[
            {"ImageId": "ami-mid", "CreationDate": "2019-03-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2019-05-01T00:00:00.000Z"},
            {"ImageId": "ami-old", "CreationDate": "2018-12-01T00:00:00.000Z"},
        ])

        assert lookup_default_ami(backend, "ubuntu", "18.04", "v1.13.0") == "ami-new"

    def test_queries_owner_and_name(self):
        backend = FakeEC2Backend(images=[{"ImageId": "ami-1", "CreationDate": "2019-01-01T00:00:00.000Z"}])

        lookup_default_ami(backend, "ubuntu", "18.04", "v1.13.0", owner_id="111122223333")

        assert backend.called("describe_images") == [{
            "owners": ["111122223333"],
            "filters": [{"Name": "name", "Values": ["capa-ami-ubuntu-18.04-1.13.0-*"]}],
        }]

    def test_no_images(self):
        with pytest.raises(ImageLookupError, match="capa-ami-ubuntu-18.04-1.13.0-"):
            lookup_default_ami(FakeEC2Backend(), "ubuntu", "18.04", "v1.13.0")

    def test_backend_fault(self):
        backend = FakeEC2Backend(errors={"describe_images": client_error("RequestLimitExceeded")})

        with pytest.raises(BackendError) as exc_info:
            lookup_default_ami(backend, "ubuntu", "18.04", "v1.13.0")

        assert exc_info.value.operation == "describe_images"

    def test_transport_fault(self):
        backend = FakeEC2Backend(errors={
            "describe_images": EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com"),
        })

        with pytest.raises(BackendError) as exc_info:
            lookup_default_ami(backend, "ubuntu", "18.04", "v1.13.0")

        assert isinstance(exc_info.value.__cause__, EndpointConnectionError)
