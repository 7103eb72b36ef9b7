# setup.py
from setuptools import setup, find_packages
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="dualocr",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["dualocr", "dualocr.*"]),
    author="Phuoc Nguyen",
    description="Parallel OCR with an optional Gemini vision pass merged into the final text.",
    long_description=long_description,
    long_description_content_type='text/markdown',
    python_requires=">=3.10",

    install_requires=[
        "pytesseract",
        "easyocr",
        "torch",
        "tqdm",
        "Pillow",
        "numpy",
        "python-slugify",
        "google-genai",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'dualocr=dualocr.cli:main',
        ],
    },
)
