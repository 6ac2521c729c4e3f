from setuptools import find_packages, setup

setup(
    name="inkframe",
    version="0.1.0",
    description="Serve PNG drawings as packed 4-bit framebuffers to a 960x540 e-paper display",
    author="Garrett Johnson",
    packages=find_packages(where="server", include=["inkframe", "inkframe.*"]),
    package_dir={"": "server"},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "pydantic>=2.0",
        "numpy>=1.26",
        "Pillow>=10.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    entry_points={
        "console_scripts": [
            "inkframe=inkframe.main:main",
        ],
    },
)
