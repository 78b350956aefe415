from clinic_ledger.api.server import main

main()
