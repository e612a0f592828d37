from setuptools import setup, find_packages

setup(
    name="microlesson-pipeline",
    version="0.1.0",
    description="Asynchronous pipeline turning long instructional videos into CLT-structured micro-lessons",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "yt-dlp>=2024.1.1",
        "httpx>=0.25.0",
        "edge-tts>=6.1.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        "structlog>=23.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "hypothesis>=6.82.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "microlesson=microlesson_pipeline.cli:main",
        ],
    },
)
