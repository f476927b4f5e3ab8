"""
Setup script for the AI Hedge Fund analysis engine.
"""

from setuptools import setup, find_packages

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

# Version
VERSION = "1.0.0"

setup(
    name="ai-hedge-fund",
    version=VERSION,
    author="Hedge Fund Engine Team",
    description="Multi-analyst decision engine producing risk-bounded trading decisions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Topic :: Office/Business :: Financial :: Investment",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
        "Environment :: Console",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hedge-fund=hedge_fund.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "hedge_fund": [
            "configs/*.yaml",
        ],
    },
    zip_safe=False,
    keywords="trading, finance, portfolio, risk, llm, analysts",
)
