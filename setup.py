# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

from setuptools import setup, find_packages
import re


with open("README.md", "r") as fh:
    _long_description = fh.read()


filename = "edge-ack-sink/edge_ack_sink/constant.py"
version = None

with open(filename, "r") as fh:
    if not re.search("\n+VERSION", fh.read()):
        raise ValueError("VERSION  is not defined in constants.")

with open(filename, "r") as fh:
    for line in fh:
        if re.search("^VERSION", line):
            constant, value = line.strip().split("=")
            if not value:
                raise ValueError("Value for VERSION not defined in constants.")
            else:
                # Strip whitespace and quotation marks
                version = str(value.strip(' "'))
            break

setup(
    name="edge-ack-sink",
    version=version,
    description="IoT Edge module acknowledging input messages after a configurable delay",
    license="MIT License",
    author="Microsoft Corporation",
    author_email="opensource@microsoft.com",
    long_description=_long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Testing",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    install_requires=[
        # Define sub-dependencies due to pip dependency resolution bug
        # https://github.com/pypa/pip/issues/988
        "urllib3>=2.2.2,<3.0.0",
        # Actual project dependencies
        "paho-mqtt>=2.0.0,<3.0.0",
        "requests>=2.32.3,<3.0.0",
        "requests-unixsocket2>=0.4.1",
        "PySocks",
        "typing_extensions",
    ],
    extras_require={"test": ["pytest", "pytest-mock", "pytest-testdox"]},
    python_requires=">=3.8, <4",
    packages=find_packages(where="edge-ack-sink"),
    package_dir={"": "edge-ack-sink"},
    entry_points={"console_scripts": ["edge-ack-sink=edge_ack_sink.__main__:main"]},
    zip_safe=False,
)
