from sitepilot.cli import main

main()
