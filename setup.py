from setuptools import setup, find_packages

# Import __version__
exec(open("mysql_wire/version.py").read())

setup(
    name="mysql-wire",
    version=__version__,
    description="An asyncio implementation of the client side of the mysql protocol",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["mysql_wire", "mysql_wire.*"]),
    python_requires=">=3.7",
    install_requires=["sqlglot>=18.6.0"],
    extras_require={
        "dev": [
            "black",
            "coverage",
            "cryptography",
            "gssapi",
            "mypy",
            "mysql-mimic",
            "pylint",
            "pytest",
            "pytest-asyncio",
            "twine",
            "wheel",
        ],
        "krb5": ["gssapi"],
        "rsa": ["cryptography"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: SQL",
        "Programming Language :: Python :: 3 :: Only",
    ],
)
