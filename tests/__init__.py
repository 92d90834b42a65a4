"""
Adding the __init__.py to the tests/ directory makes test modules part of a package, which requires
the "prepend" import mode (the pytest default). Test files in subdirectories are not packages and
so must have unique basenames.
"""
