from scholar.cli.main import main

main()
