"""
python -m build
twine upload dist/*
"""

from setuptools import setup, find_packages


def jarest_setup():
    with open("requirements.txt", "rt") as fp:
        install_requires = fp.read().strip().split("\n")

    about = {}
    with open("jarest/__about__.py", "rt") as fp:
        exec(fp.read(), about)
    version = about["__version__"]

    setup(
        name="jarest",
        packages=find_packages(exclude=["tests", "tests.*", "examples"]),
        version=version,
        license="MIT",
        description=about["__description__"],
        long_description=open("README.rst").read(),
        keywords=["JsonAPI", "FastAPI", "REST", "SqlAlchemy", "OpenAPI"],
        python_requires=">=3.8, <4",
        install_requires=install_requires,
        classifiers=[
            "Development Status :: 3 - Alpha",
            "License :: OSI Approved :: MIT License",
            "Intended Audience :: Developers",
            "Framework :: FastAPI",
            "Topic :: Software Development :: Libraries",
            "Environment :: Web Environment",
            "Programming Language :: Python :: 3.12",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.8",
        ],
        extras_require={"test": ["pytest>=7"], "demo": ["uvicorn"]},
    )


jarest_setup()  # pragma: no cover
