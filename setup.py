"""Set up the repostore package."""
import json
from pathlib import Path

from setuptools import find_packages, setup

DESCRIPTION = (
    "Storage backends for hosted Git repositories on a local"
    " filesystem or an S3-compatible object store."
)

REQUIREMENTS = [
    "aiofiles>=23.2.1",
    "aiobotocore>=2.1.0",
    "aiohttp>=3.8.0",
    "fastapi>=0.70.0,<=0.106.0",
    "httpx>=0.21.1",
    "prometheus-client>=0.21.0",
    "pydantic>=2.6.1",
    "typing-extensions>=3.7.4.3",  # required by pydantic
    "python-dotenv>=0.19.0",
    "shortuuid>=1.0.1",
]

ROOT_DIR = Path(__file__).parent.resolve()
README_FILE = ROOT_DIR / "README.md"
LONG_DESCRIPTION = README_FILE.read_text(encoding="utf-8")
VERSION_FILE = ROOT_DIR / "repostore" / "VERSION"
VERSION = json.loads(VERSION_FILE.read_text(encoding="utf-8"))["version"]


setup(
    name="repostore",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    include_package_data=True,
    package_data={"repostore": ["VERSION"]},
    install_requires=REQUIREMENTS,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
    entry_points={"console_scripts": ["repostore = repostore.__main__:main"]},
)
