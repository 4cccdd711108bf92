"""Services package: storage backends."""
