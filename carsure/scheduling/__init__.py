"""Workshop appointment booking, transitions and expiry."""
