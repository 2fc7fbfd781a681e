# dailyclaim: daily check-in claims for Hoyolab and SKPORT/Endfield accounts
