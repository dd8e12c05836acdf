"""Reports sub-package — pandas views behind the client charts."""
