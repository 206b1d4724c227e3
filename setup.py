import os.path

import setuptools

root_dir = os.path.abspath(os.path.dirname(__file__))
readme_file = os.path.join(root_dir, "README.rst")
with open(readme_file, encoding="utf-8") as f:
    long_description = f.read()

install_requires = [
    "aiortc>=1.9.0",
    "pyee>=9.0.0",
    "websockets>=13.0",
]

setuptools.setup(
    name="aionegotiate",
    version="0.1.0",
    description="Perfect Negotiation and a signaling relay for aiortc peer connections",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    license="BSD",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
    ],
    package_dir={"": "src"},
    packages=["aionegotiate"],
    python_requires=">=3.9",
    install_requires=install_requires,
    extras_require={
        "dev": [
            "coverage[toml]>=7.2.2",
            "typing_extensions>=4.0; python_version<'3.10'",
        ],
    },
    entry_points={
        "console_scripts": ["aionegotiate-relay = aionegotiate.__main__:main"],
    },
)
