#!/usr/bin/env python

from setuptools import find_packages, setup

setup(
    name="bucketproxy",
    version="0.1.0",
    description="Serve an object storage bucket as a browsable directory tree over HTTP",
    packages=find_packages(include=["bucketproxy", "bucketproxy.*"]),
    package_data={"bucketproxy": ["templates/*.html"]},
    include_package_data=True,
    zip_safe=False,
    keywords=["S3", "HTTP", "proxy"],
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    ],
    python_requires=">=3.11",
    install_requires=[
        "fastapi[all]",
        "starlette>=0.48",
        "jinja2",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "typing_extensions",
        "uvicorn",
        "aiobotocore",
        "types-aiobotocore-s3",
    ],
    extras_require={
        "dev": [
            "pytest",
            "anyio",
            "httpx",
            "mypy",
            "flake8",
        ]
    },
    entry_points={"console_scripts": ["bucketproxy = bucketproxy.__main__:main"]},
)
