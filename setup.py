import os
import re
from codecs import open

from setuptools import find_packages
from setuptools import setup

here = os.path.abspath(os.path.dirname(__file__))

with open(os.path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()
long_description_content_type = "text/markdown"

with open(os.path.join(here, "headinject/version.py")) as f:
    match = re.search(r'VERSION = "(.+?)"', f.read())
    assert match
    VERSION = match.group(1)

setup(
    name="headinject",
    version=VERSION,
    description="A mitmproxy addon that injects a snippet before </head> in streamed HTML responses.",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    license="MIT",
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Development Status :: 4 - Beta",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Internet :: Proxy Servers",
        "Typing :: Typed",
    ],
    packages=find_packages(
        include=[
            "headinject",
            "headinject.*",
        ]
    ),
    python_requires=">=3.10",
    install_requires=[
        "mitmproxy>=10.0",
    ],
    extras_require={
        "dev": [
            "hypothesis>=5.8",
            "pytest-asyncio>=0.21",
            "pytest>=7.0",
        ],
    },
)
