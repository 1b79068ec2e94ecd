pytest_plugins = ["lp_custody.testing.fixtures"]
