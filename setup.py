from setuptools import setup, find_packages

setup(
    name="mentorlink",
    version="0.1",
    packages=find_packages(include=["mentorlink", "mentorlink.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "psycopg2-binary",
        "python-multipart",
        "pydantic",
        "pydantic-settings",
        "python-dotenv",
        "httpx",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
