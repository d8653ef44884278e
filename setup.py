import pathlib

from setuptools import find_packages, setup

here = pathlib.Path(__file__).parent

with (here / "README.rst").open("r", encoding="utf-8") as fo:
    long_description = fo.read()

metadatas = dict(
    name="pgrdslog",
    version="0.1.0",
    description="PostgreSQL log events and query samples from Amazon RDS",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    author="pgrdslog contributors",
    license="PostgreSQL",
    keywords="postgresql rds logs duration buffercache",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: PostgreSQL License",
        "Programming Language :: Python :: 3",
        "Topic :: Database",
        "Topic :: System :: Logging",
    ],
    install_requires=[
        "boto3",
        "psycopg2-binary",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
        ],
    },
)


if __name__ == "__main__":
    setup(
        packages=find_packages(".", exclude=["tests"]),
        python_requires=">=3.8",
        **metadatas
    )
