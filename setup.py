from setuptools import setup, find_packages

setup(
    name="tabquery",
    version="0.1.0",
    packages=find_packages(include=["tabquery", "tabquery.*"]),
    include_package_data=True,
    install_requires=[
        "playwright>=1.40.0",
        "beautifulsoup4>=4.12.0",
        "soupsieve>=2.5",
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.5.0",
        "click>=8.1.7",
        "rich>=13.7.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tabquery=tabquery.cli:main",
        ],
    },
    python_requires=">=3.10",
    description="Query and manipulate DOM nodes across shadow roots and iframes in live browser tabs",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
