#!/usr/bin/env python
from setuptools import find_packages, setup

VERSION = "0.1.0"
INSTALL_REQUIREMENTS = [
    "Django>=5.0",
    "celery>=5.3",
    "django-redis>=5.4",
    "redis>=5.0",
    "requests>=2.31",
    "structlog>=24.1",
    "django-structlog>=8.0",
    "sentry-sdk>=2.0",
]
TEST_REQUIREMENTS = ["pytest", "pytest-django"]
SCRIPTS = ["manage.py"]
DESCRIPTION = "Bulk import from a rate limited API with coordinated workers"
CLASSIFIERS = """\
Environment :: Web Environment
Framework :: Django
Programming Language :: Python
Programming Language :: Python :: 3.11
""".splitlines()

with open("README.md", "r") as f:
    LONG_DESCRIPTION = f.read()


setup(
    name="bulkimport",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    packages=find_packages(),
    include_package_data=True,
    scripts=SCRIPTS,
    python_requires=">=3.10",
    install_requires=INSTALL_REQUIREMENTS,
    extras_require={"test": TEST_REQUIREMENTS},
    classifiers=CLASSIFIERS,
)
