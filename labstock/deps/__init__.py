# Marks `labstock.deps` as a package so `from labstock.deps.auth import ...` works.
