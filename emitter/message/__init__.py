"""Subscription identifiers, message identifiers, message frames and the subscription trie."""