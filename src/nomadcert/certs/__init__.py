from .envelope import issue_certificate, parse_certificate, verify_certificate  # noqa: F401
from .keys import KeyMaterial  # noqa: F401
from .manifest import ManifestBuilder  # noqa: F401
from .sign import sign_manifest  # noqa: F401
from .verify import check_signature, verify  # noqa: F401
